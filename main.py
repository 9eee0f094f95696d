#!/usr/bin/env python

from railbooker.cli import main


if __name__ == "__main__":
    main()
