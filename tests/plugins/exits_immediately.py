"""Plugin that exits before announcing a port."""

import sys

if __name__ == "__main__":
    sys.exit(3)
