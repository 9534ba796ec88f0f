import sys

from mailmirror.cli import main

sys.exit(main())
