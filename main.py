import sys

from niri_transcribe.main import main

if __name__ == "__main__":
    sys.exit(main())
