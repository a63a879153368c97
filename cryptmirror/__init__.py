"""
cryptmirror
- Keeps a source folder and a target folder in bidirectional sync.
- Files travelling source -> target are brotli-compressed and AES-256-CTR
  encrypted; files travelling target -> source are decrypted and decompressed.
- Remembers which paths were already synced in ~/.cryptmirror/state.json so a
  restart does not re-copy everything.
"""

__version__ = "0.3.0"
