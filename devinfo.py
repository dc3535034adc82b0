#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import sys
import re

import miner
from miner import die
from envbuffer import EnvBuffer
import hwrevision


class DevInfo():
  gw = None        # Miner()
  verbose = 0
  hwrev = None     # HwRevision
  mtd_list = None  # text of /proc/mtd
  mtd_hash = None
  partlist = []    # list of {num, size, erasesize, name}
  env = None       # EnvBuffer() from fw_printenv

  def __init__(self, gw = None, verbose = 0, infolevel = 1):
    self.gw = miner.Miner() if gw is None else gw
    self.verbose = verbose
    self.partlist = [ ]
    self.env = EnvBuffer()
    if infolevel > 0:
      self.update(infolevel)

  def update(self, infolevel):
    if infolevel >= 1:
      self.get_part_table()
      self.get_mtd_hash()
    if infolevel >= 2:
      self.get_hwrevision()
      self.get_env()

  def get_hwrevision(self, verbose = None):
    verbose = verbose if verbose is not None else self.verbose
    text = self.gw.run_command('cat /etc/hwrevision', 'hwrevision.txt')
    self.hwrev = hwrevision.parse_hwrevision(text)
    if verbose:
      print(f'HW revision: board = "{self.hwrev.board}"  model = "{self.hwrev.model}"')
    return self.hwrev

  def get_part_table(self, verbose = None):
    verbose = verbose if verbose is not None else self.verbose
    self.partlist = [ ]
    self.mtd_list = self.gw.run_command('cat /proc/mtd', 'mtd_list.txt')
    if not self.mtd_list:
      return [ ]
    self.partlist = parse_mtd_list(self.mtd_list)
    if verbose:
      print("MTD partitions:")
      for part in self.partlist:
        print('  %2d > size: 0x%08X  erasesize: 0x%05X  name: "%s"' % (part['num'], part['size'], part['erasesize'], part['name']))
      print(" ")
    return self.partlist

  def get_mtd_hash(self):
    md5 = self.gw.get_md5_for_remote_file('/proc/mtd')
    self.mtd_hash = md5 if isinstance(md5, str) else None
    return self.mtd_hash

  def get_env(self, verbose = None):
    verbose = verbose if verbose is not None else self.verbose
    text = self.gw.run_command('fw_printenv', 'fw_env.txt')
    self.env = EnvBuffer.from_printenv(text if text else '')
    if verbose:
      print('U-Boot env:')
      for k, v in self.env.var.items():
        print(f'  {k} = {v}')
    return self.env


def parse_mtd_list(mtd_list):
  partlist = [ ]
  mtdtbl = re.findall(r'mtd([0-9]+): ([0-9a-fA-F]+) ([0-9a-fA-F]+) "(.*?)"', mtd_list)
  for mtd in mtdtbl:
    partlist.append({
      'num': int(mtd[0]),
      'size': int(mtd[1], 16),
      'erasesize': int(mtd[2], 16),
      'name': mtd[3],
    })
  return partlist


if __name__ == "__main__":
  gw = miner.Miner()
  dev = DevInfo(gw, verbose = 1, infolevel = 2)
  if not dev.partlist:
    die("Partition list is empty!")
  print(f'MTD hash: {dev.mtd_hash}')
  sys.exit(0)
