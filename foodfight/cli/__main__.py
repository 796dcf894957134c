import sys

from foodfight.cli import main

sys.exit(main())
