import sys

from cloudmcp.server import main

sys.exit(main())
