#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import sys

import miner
from miner import die


def reboot_miner(gw, shutdown_timeout = 20, reboot_timeout = 120):
  print('Send command "reboot" via SSH ...')
  gw.run_cmd("sync ; reboot", die_on_error = False)
  if not gw.wait_shutdown(shutdown_timeout):
    die('The "reboot" command did not shutdown the device.')
  if not gw.wait_reboot(reboot_timeout):
    die('The device did not come back after reboot.')
  print("Reboot completed!")
  return True


if __name__ == "__main__":
  gw = miner.Miner()
  reboot_miner(gw)
  sys.exit(0)
