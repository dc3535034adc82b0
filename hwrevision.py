#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import re
import enum
import collections


# "/etc/hwrevision" holds "<board> <model>", e.g. "g19 t1.g19"
HwRevision = collections.namedtuple('HwRevision', [ 'board', 'model' ])


def parse_hwrevision(text):
  if text is None:
    return HwRevision('', '')
  items = text.strip().split()
  board = items[0].upper() if len(items) > 0 else ''
  model = items[1].lower() if len(items) > 1 else ''
  return HwRevision(board, model)


class HwFamily(enum.Enum):
  T1 = (r't1\.', ( 'G19', 'G29' ))   # DragonMint T1 control boards

  def __init__(self, pattern, boards):
    self.pattern = pattern
    self.boards = boards

  @classmethod
  def match(cls, model):
    for family in cls:
      if re.match(family.pattern, model):
        return family
    return None


def fw_miner_check(hwrev, *boards):
  board = hwrev.board if isinstance(hwrev, HwRevision) else hwrev
  return board in boards


def get_family(hwrev):
  family = HwFamily.match(hwrev.model)
  if family is None:
    return None
  if not fw_miner_check(hwrev, *family.boards):
    return None
  return family
