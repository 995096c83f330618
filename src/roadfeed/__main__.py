import sys

from roadfeed.cli import main

sys.exit(main())
