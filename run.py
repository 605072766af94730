#!/usr/bin/env python3
"""Backup relay runner"""
import sys
from backup_relay.cli import main

if __name__ == '__main__':
    sys.exit(main())
