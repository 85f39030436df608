import sys

from fleet_hygiene import cli

sys.exit(cli.main())
