"""passbox - A local, file-backed password vault.
One master password protects every credential via libsodium (pynacl).
"""

__version__ = "0.1.0"
