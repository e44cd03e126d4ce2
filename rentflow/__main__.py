import sys

from rentflow.cli import main

sys.exit(main())
