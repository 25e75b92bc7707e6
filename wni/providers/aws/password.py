"""Recovery of the Windows Administrator password of an EC2 instance.

EC2 encrypts the generated password with the public half of the launch key
pair (RSA, PKCS#1 v1.5). It becomes available a few minutes after boot.
"""

from __future__ import annotations

import base64
import binascii

import paramiko
from cryptography.hazmat.primitives.asymmetric import padding


def decrypt_password(password_data: str, private_key_path: str) -> str:
    """Decrypt the base64 ``PasswordData`` returned by ``get_password_data``.

    Args:
        password_data: Encrypted password, base64 encoded.
        private_key_path: PEM private key of the key pair used at launch.

    Raises:
        ValueError: If the key cannot be loaded or does not match the data.
    """
    try:
        key = paramiko.RSAKey.from_private_key_file(private_key_path)
    except paramiko.SSHException as e:
        raise ValueError(f"cannot load RSA key {private_key_path}: {e}") from e

    try:
        encrypted = base64.b64decode(password_data.strip(), validate=True)
    except binascii.Error as e:
        raise ValueError(f"password data is not valid base64: {e}") from e

    return key.key.decrypt(encrypted, padding.PKCS1v15()).decode("utf-8")
