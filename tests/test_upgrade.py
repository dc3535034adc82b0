# -*- coding: utf-8 -*-

import binascii

import pytest

import devinfo
import fwlayout
import upgrade
from envbuffer import EnvBuffer
from hwrevision import HwFamily, fw_miner_check

from conftest import FakeMiner, FW_ENV


BAD_MTD_LIST = (
  'dev:    size   erasesize  name\n'
  'mtd0: 10000000 00020000 "all"\n'
)


def make_cfg(gw, fw_dir = 'firmware/'):
  dev = devinfo.DevInfo(gw, infolevel = 2)
  return upgrade.read_config(dev, fw_dir)


def test_read_config(gw):
  cfg = make_cfg(gw)
  assert cfg.ethaddr == 'a0:b0:45:00:12:34'
  assert cfg.image_flag == '0'
  assert cfg.hwrev.board == 'G19'
  assert cfg.mtd_hash == fwlayout.MTD_HASH
  assert len(cfg.partlist) == 3
  with pytest.raises(AttributeError):
    cfg.image_flag = '1'


def test_read_config_fills_missing_fields(gw):
  dev = devinfo.DevInfo(gw, infolevel = 0)
  cfg = upgrade.read_config(dev)
  assert cfg.mtd_hash == fwlayout.MTD_HASH
  assert cfg.hwrev.model == 't1.g19'


def test_run_checks_ok(gw):
  table = upgrade.run_checks(make_cfg(gw))
  assert table is fwlayout.OFFSET_TABLES[0]


def test_layout_mismatch_stops_before_hwrevision(capsys):
  gw = FakeMiner(files = { '/proc/mtd': BAD_MTD_LIST, '/etc/hwrevision': 'g30 x1.g30' }, env = 'image_flag=7\n')
  cfg = make_cfg(gw)
  with pytest.raises(upgrade.UnsupportedLayout, match = 'Unsupported NAND partition layout'):
    upgrade.run_checks(cfg)
  err = capsys.readouterr().err
  assert '"all"' in err


def test_unsupported_board(gw):
  gw.files['/etc/hwrevision'] = 'g30 t1.g30\n'
  with pytest.raises(upgrade.UnsupportedHardware, match = 'G30 t1.g30'):
    upgrade.run_checks(make_cfg(gw))


def test_unsupported_model(gw):
  gw.files['/etc/hwrevision'] = 'g19 s9.g19\n'
  with pytest.raises(upgrade.UnsupportedHardware):
    upgrade.run_checks(make_cfg(gw))


def test_check_hwrevision_family(gw):
  gw.files['/etc/hwrevision'] = 'g29 t1.g29\n'
  assert upgrade.check_hwrevision(make_cfg(gw)) is HwFamily.T1


@pytest.mark.parametrize('env', [ 'ethaddr=a0:b0:45:00:12:34\nimage_flag=2\n', 'ethaddr=a0:b0:45:00:12:34\n' ])
def test_unsupported_image_flag(env):
  gw = FakeMiner(env = env)
  with pytest.raises(upgrade.UnsupportedImageFlag, match = 'Unsupported image flag'):
    upgrade.run_checks(make_cfg(gw))


def test_image_flag_1(gw):
  gw.env_text = FW_ENV.replace('image_flag=0', 'image_flag=1')
  table = upgrade.run_checks(make_cfg(gw))
  assert table.src_kernel_off == 0x0680000
  assert table.dst_kernel_off == 0x1E00000


def test_fw_miner_check():
  assert fw_miner_check('G19', 'G19', 'G29')
  assert not fw_miner_check('G30', 'G19', 'G29')
  assert not hasattr(upgrade, 'fw_miner_check')


def test_select_offsets_rejects_cross_slot_collision(gw, monkeypatch):
  # bitstream moved onto the flag 1 kernel source
  t = fwlayout.OFFSET_TABLES[0]._replace(bitstream_off = 0x0480000)
  monkeypatch.setitem(fwlayout.OFFSET_TABLES, 0, t)
  with pytest.raises(upgrade.FwError, match = 'sources of table 1'):
    upgrade.select_offsets(make_cfg(gw))


def test_file_size(tmp_path):
  fn = tmp_path / 'fpga.bit'
  fn.write_bytes(b'\x00' * 256)
  assert upgrade.file_size(str(fn)) == '0x100'
  fn.write_bytes(b'')
  assert upgrade.file_size(str(fn)) == '0x0'


def test_flash_eraseall(gw):
  assert upgrade.flash_eraseall(gw, 2)
  assert upgrade.flash_eraseall(gw, '/dev/mtd1')
  assert gw.cmds == [ 'flash_erase /dev/mtd2 0 0', 'flash_erase /dev/mtd1 0 0' ]


def test_plan_order(gw, fw_dir):
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  cmds = fw.get_cmds()
  assert cmds[0] == 'flash_erase /dev/mtd2 0 0'
  assert cmds[1] == 'nanddump -q -s 0x840000 -l 0x600000 /dev/mtd0 | nandwrite -q -s 0x7D00000 -p /dev/mtd2 -'
  assert cmds[2] == 'nanddump -q -s 0xE40000 -l 0x800000 /dev/mtd0 | nandwrite -q -s 0x8300000 -p /dev/mtd2 -'
  assert cmds[3] == 'nanddump -q -s 0x1640000 -l 0x800000 /dev/mtd0 | nandwrite -q -s 0x8B00000 -p /dev/mtd2 -'
  assert 'flash_erase /dev/mtd0 0x0 4' in cmds
  assert 'nandwrite -q -s 0x200000 -p /dev/mtd0 /tmp/uboot_env.bin' in cmds
  assert 'nandwrite -q -s 0x220000 -p /dev/mtd0 /tmp/uboot_env.bin' in cmds
  assert 'flash_erase /dev/mtd0 0x300000 28' in cmds
  assert cmds[-1] == 'sync'
  # the whole-device erase never touches the partition holding the sources
  assert 'flash_erase /dev/mtd0 0 0' not in cmds


def test_build_env(gw, fw_dir):
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  env = fw.build_env()
  assert env.var['ethaddr'] == 'a0:b0:45:00:12:34'
  assert env.var['image_flag'] == '1'
  assert env.var['kernel_off'] == '0x7D00000'
  assert env.var['bitstream_size'] == '0x100'
  with open(fw.save_env(), 'rb') as file:
    data = file.read()
  assert len(data) == fwlayout.UBOOT_ENV_SIZE
  assert int.from_bytes(data[:4], byteorder='little') == binascii.crc32(data[4:])
  assert EnvBuffer(data).var == env.var


def test_build_env_keeps_board_vars(fw_dir):
  gw = FakeMiner(env = 'bootcmd=run nandboot\n' + FW_ENV)
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  env = fw.build_env()
  assert env.var['bootcmd'] == 'run nandboot'
  assert env.var['bootdelay'] == '3'
  assert env.var['image_flag'] == '1'
  assert dict(cfg.env)['image_flag'] == '0'


def test_build_env_flag_1_activates_slot_0(fw_dir):
  gw = FakeMiner(env = FW_ENV.replace('image_flag=0', 'image_flag=1'))
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  env = fw.build_env()
  assert env.var['image_flag'] == '0'
  assert env.var['kernel_mtd'] == '1'
  assert env.var['kernel_off'] == '0x1E00000'


def test_check_images_missing_file(gw, fw_dir, tmp_path):
  (tmp_path / 'firmware' / 'fpga.bit').unlink()
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  with pytest.raises(upgrade.FwError, match = 'fpga.bit'):
    fw.check_images()


def test_check_images_too_large(gw, fw_dir, tmp_path):
  (tmp_path / 'firmware' / 'spl.img').write_bytes(b'\x00' * (fwlayout.SPL_SIZE + 1))
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  with pytest.raises(upgrade.FwError, match = 'too large'):
    fw.check_images()


def test_check_images_no_ethaddr(fw_dir):
  gw = FakeMiner(env = 'image_flag=0\n')
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  with pytest.raises(upgrade.FwError, match = 'ethaddr'):
    fw.check_images()


def test_run(gw, fw_dir):
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  assert fw.run()
  remote = [ r for _, r in gw.uploads ]
  assert remote == [ '/tmp/spl.img', '/tmp/u-boot.img', '/tmp/fpga.bit', '/tmp/uboot_env.bin' ]
  assert gw.cmds[:len(fw.get_cmds())] == fw.get_cmds()
  assert gw.cmds[-1].startswith('rm -f /tmp/spl.img')


def test_run_stops_on_failed_command(gw, fw_dir):
  gw.fail_on = 'nandwrite -q -s 0x8300000'
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  with pytest.raises(upgrade.FwError, match = 'Error on execute command'):
    fw.run()
  assert not any(cmd.startswith('flash_erase /dev/mtd0') for cmd in gw.cmds)
  # staged files are removed even when flashing stops halfway
  assert gw.cmds[-1] == 'rm -f /tmp/spl.img /tmp/u-boot.img /tmp/fpga.bit /tmp/uboot_env.bin'


def test_run_cleans_up_after_failed_upload(gw, fw_dir, monkeypatch):
  monkeypatch.setattr(gw, 'upload', lambda fn_local, fn_remote, md5chk = True, verbose = 1: False)
  cfg = make_cfg(gw, fw_dir)
  fw = upgrade.FwUpgrade(gw, cfg, upgrade.run_checks(cfg))
  with pytest.raises(upgrade.FwError, match = 'upload'):
    fw.run()
  assert gw.cmds == [ 'rm -f /tmp/spl.img /tmp/u-boot.img /tmp/fpga.bit /tmp/uboot_env.bin' ]


def test_main_dry_run(fw_dir):
  gw = FakeMiner(img_write = False)
  assert upgrade.main([ 'upgrade.py', fw_dir ], gw = gw) == 0
  assert gw.cmds == [ ]
  assert gw.uploads == [ ]


def test_main_upgrades(gw, fw_dir, capsys):
  assert upgrade.main([ 'upgrade.py', fw_dir ], gw = gw) == 0
  assert 'sync' in gw.cmds
  out = capsys.readouterr().out
  assert 'SRC_KERNEL_OFF=0x0840000' in out
  assert 'DST_KERNEL_OFF=0x7D00000' in out


@pytest.mark.parametrize('files, env, msg', [
  ({ '/proc/mtd': BAD_MTD_LIST }, FW_ENV, 'Unsupported NAND partition layout'),
  ({ '/etc/hwrevision': 'g30 t1.g30' }, FW_ENV, 'Unsupported hardware revision'),
  ({ }, 'ethaddr=a0:b0:45:00:12:34\nimage_flag=3\n', 'Unsupported image flag'),
])
def test_main_exits_on_failed_check(fw_dir, capsys, files, env, msg):
  gw = FakeMiner(files = files, env = env)
  with pytest.raises(SystemExit) as e:
    upgrade.main([ 'upgrade.py', fw_dir ], gw = gw)
  assert e.value.code == 1
  assert msg in capsys.readouterr().err
  assert gw.cmds == [ ]
