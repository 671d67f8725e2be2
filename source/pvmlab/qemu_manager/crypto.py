import os

import paramiko


def ensure_ssh_key(private_key_path: str, bits: int = 2048) -> str:
    """
    Generate the lab's RSA key pair if it does not exist yet.
    Returns the public key in authorized_keys format.
    """
    public_key_path = private_key_path + ".pub"
    if not os.path.exists(private_key_path):
        os.makedirs(os.path.dirname(private_key_path), exist_ok=True)
        print("[ssh] generating key pair", private_key_path)
        key = paramiko.RSAKey.generate(bits)
        key.write_private_key_file(private_key_path)
        os.chmod(private_key_path, 0o600)
        with open(public_key_path, "w", encoding="utf-8") as f:
            f.write(f"{key.get_name()} {key.get_base64()}\n")
        os.chmod(public_key_path, 0o644)

    with open(public_key_path, "r", encoding="utf-8") as f:
        return f.read().strip()


def load_pkey(path: str):
    """Try common private key formats, raising if none match."""
    for key_cls in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key_file(path)
        except (paramiko.SSHException, ValueError):
            continue
    raise RuntimeError(f"Could not load the private key: {path}")
