import sys

from tiered_collector.cli import main

sys.exit(main())
