import sys

from pye131.cli import main

sys.exit(main())
