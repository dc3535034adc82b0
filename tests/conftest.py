# -*- coding: utf-8 -*-

import hashlib

import pytest

import miner


MTD_LIST = (
  'dev:    size   erasesize  name\n'
  'mtd0: 02000000 00020000 "boot"\n'
  'mtd1: 04000000 00020000 "firmware1"\n'
  'mtd2: 0a000000 00020000 "firmware2"\n'
)

FW_ENV = (
  'bootdelay=3\n'
  'ethaddr=a0:b0:45:00:12:34\n'
  'image_flag=0\n'
)


class FakeMiner(miner.Miner):
  img_write = True

  def __init__(self, files = None, env = FW_ENV, img_write = True):
    self.verbose = 0
    self.img_write = img_write
    self.files = {
      '/proc/mtd': MTD_LIST,
      '/etc/hwrevision': 'g19 t1.g19\n',
    }
    if files:
      self.files.update(files)
    self.env_text = env
    self.reads = [ ]
    self.cmds = [ ]
    self.uploads = [ ]
    self.fail_on = None

  def run_command(self, cmd, fn = None, encoding = "latin_1", verbose = 0):
    self.reads.append(cmd)
    if cmd.startswith('cat '):
      return self.files.get(cmd[4:].strip())
    if cmd.startswith('fw_printenv'):
      return self.env_text
    if cmd.startswith('md5sum'):
      path = cmd.split('"')[1]
      if path not in self.files:
        return f'md5sum: {path}: No such file or directory\n'
      md5 = hashlib.md5(self.files[path].encode('latin_1')).hexdigest()
      return f'{md5}  {path}\n'
    return None

  def run_cmd(self, cmd, msg = None, timeout = None, die_on_error = True):
    self.cmds.append(cmd)
    if self.fail_on and self.fail_on in cmd:
      if die_on_error:
        miner.die(f'Command failed! CMD: "{cmd}"')
      return False
    return True

  def upload(self, fn_local, fn_remote, md5chk = True, verbose = 1):
    with open(fn_local, 'rb') as file:
      data = file.read()
    self.uploads.append((fn_local, fn_remote))
    self.files[fn_remote] = data.decode('latin_1')
    return True


@pytest.fixture
def gw():
  return FakeMiner()


@pytest.fixture
def fw_dir(tmp_path, monkeypatch):
  monkeypatch.chdir(tmp_path)
  path = tmp_path / 'firmware'
  path.mkdir()
  (path / 'spl.img').write_bytes(b'\x5a' * 0x8000)
  (path / 'u-boot.img').write_bytes(b'\xa5' * 0x40000)
  (path / 'fpga.bit').write_bytes(b'\xff' * 256)
  return str(path)
