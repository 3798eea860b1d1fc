import sys

from ctvpool.cli import main

sys.exit(main())
