import socket


def find_random_port() -> int:
    """
    Ask the kernel for a free localhost TCP port (bound then released).
    Nothing holds the port afterwards, so another process may take it first.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    finally:
        s.close()
    print("[ports] selected", port)
    return port
