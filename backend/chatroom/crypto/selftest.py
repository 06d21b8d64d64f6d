from __future__ import annotations

import base64

from chatroom.crypto.codec import DECRYPT_FAILED, encrypt_message, decrypt_message


def main() -> None:
    # --- round trip ---
    passphrase = 'secret123'
    pt = 'hello encrypted room'

    blob = encrypt_message(pt, passphrase)
    back = decrypt_message(blob, passphrase)
    assert back == pt, 'AES-GCM roundtrip failed'

    # --- fresh salt/nonce per call ---
    assert encrypt_message(pt, passphrase) != blob, 'Two encryptions produced the same blob'

    # --- wrong passphrase ---
    assert decrypt_message(blob, 'wrongpass') == DECRYPT_FAILED, 'Wrong passphrase should fail'

    # --- tampered ciphertext ---
    packed = bytearray(base64.b64decode(blob))
    packed[-1] ^= 0x01
    tampered = base64.b64encode(bytes(packed)).decode('ascii')
    assert decrypt_message(tampered, passphrase) == DECRYPT_FAILED, 'Tampered blob should fail'

    print('OK: crypto selftest passed')


if __name__ == '__main__':
    main()
