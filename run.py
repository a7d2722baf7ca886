#!/usr/bin/env python3
"""Run a backup from a source checkout"""
from s3backup.cli import main

if __name__ == '__main__':
    main()
