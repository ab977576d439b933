import sys

from hcitrace.cli import main

sys.exit(main())
