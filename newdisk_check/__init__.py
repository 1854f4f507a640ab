"""Pre-ingest validation for disks headed into a ZFS pool

Checks that a device is a real, unused block device, reports its SMR/CMR
characteristics, runs SMART self-tests and, unless running in safe mode and
only after typed confirmation, a destructive badblocks write test followed
by a wipefs of old signatures.

Requirements:
  - Must run as root
  - Python 3.10+
  - smartctl, hdparm, zpool, badblocks, wipefs, blockdev, lsblk
"""

VERSION = "1.0.0"
