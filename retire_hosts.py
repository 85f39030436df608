#!/usr/bin/env python3

# one retirement pass over a cluster:
#   - cordons (ecs DRAINING) active hosts with high disk usage
#   - terminates draining hosts that are nearly idle
# run it on a timer for a control loop. use -n first.

import sys

from fleet_hygiene import cli

if __name__ == "__main__":
    sys.exit(cli.main())
