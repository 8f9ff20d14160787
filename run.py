"""
voxkey - local speech-to-text with speaker identification.

Entry point for running from a source checkout.
"""

import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent / "src"))


if __name__ == '__main__':
    print('Starting voxkey...')
    load_dotenv(Path(__file__).parent / ".env")
    from voxkey.main import main
    sys.exit(main())
