#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import collections

import miner
from miner import die
import devinfo
import reboot
import hwrevision
import fwlayout
from envbuffer import EnvBuffer


class UpgradeError(Exception): pass

class UnsupportedLayout(UpgradeError): pass

class UnsupportedHardware(UpgradeError): pass

class UnsupportedImageFlag(UpgradeError): pass

class FwError(UpgradeError): pass


UpgradeConfig = collections.namedtuple('UpgradeConfig', [
    'ethaddr',
    'image_flag',
    'hwrev',
    'mtd_hash',
    'mtd_list',
    'partlist',
    'fw_dir',
    'env',       # U-Boot env read from the board
])


def read_config(dev, fw_dir = 'firmware/'):
    if dev.mtd_list is None:
        dev.get_part_table()
    if dev.mtd_hash is None:
        dev.get_mtd_hash()
    if dev.hwrev is None:
        dev.get_hwrevision()
    if not dev.env.var:
        dev.get_env()
    return UpgradeConfig(
        ethaddr = dev.env.get_env('ethaddr'),
        image_flag = dev.env.get_env('image_flag'),
        hwrev = dev.hwrev,
        mtd_hash = dev.mtd_hash,
        mtd_list = dev.mtd_list,
        partlist = tuple(dev.partlist),
        fw_dir = fw_dir,
        env = tuple(dev.env.var.items()),
    )


def check_mtd_layout(cfg):
    if cfg.mtd_hash == fwlayout.MTD_HASH:
        return True
    print('Partition table:', file = sys.stderr)
    print(cfg.mtd_list if cfg.mtd_list else '<empty>', file = sys.stderr)
    raise UnsupportedLayout(f'Unsupported NAND partition layout! (md5: {cfg.mtd_hash})')


def check_hwrevision(cfg):
    hwrev = cfg.hwrev
    family = hwrevision.get_family(hwrev)
    if family is None:
        raise UnsupportedHardware(f'Unsupported hardware revision "{hwrev.board} {hwrev.model}"!')
    return family


def select_offsets(cfg):
    try:
        table = fwlayout.get_offsets(cfg.image_flag)
    except ValueError as e:
        raise UnsupportedImageFlag(str(e)) from None
    for src_table in fwlayout.OFFSET_TABLES.values():
        overlaps = fwlayout.find_overlaps(table, src_table)
        if overlaps:
            raise FwError(f'Offset table {table.image_flag} writes over sources of table {src_table.image_flag}: {overlaps}')
    if cfg.partlist:
        parts = fwlayout.find_out_of_bounds(table, cfg.partlist)
        if parts:
            raise UnsupportedLayout(f'Offset table {table.image_flag} does not fit into partitions: {parts}')
    return table


def run_checks(cfg):
    check_mtd_layout(cfg)
    check_hwrevision(cfg)
    return select_offsets(cfg)


def mtd_dev(mtd):
    return f'/dev/mtd{mtd}' if isinstance(mtd, int) else mtd


def eraseall_cmd(mtd):
    return f'flash_erase {mtd_dev(mtd)} 0 0'


def flash_eraseall(gw, mtd, msg = None, timeout = 120, die_on_error = True):
    return gw.run_cmd(eraseall_cmd(mtd), msg = msg, timeout = timeout, die_on_error = die_on_error)


def file_size(fn):
    return '0x%x' % os.path.getsize(fn)


def print_offsets(table):
    print(f'Offsets for image_flag = {table.image_flag}:')
    for name, value in table._asdict().items():
        if name == 'image_flag':
            continue
        fmt = '  %s=0x%07X' if name.endswith('_off') else '  %s=%d'
        print(fmt % (name.upper(), value))


class FwUpgrade():
    spl_fn = 'spl.img'
    uboot_fn = 'u-boot.img'
    bitstream_fn = 'fpga.bit'
    env_fn = 'uboot_env.bin'
    dn_tmp = 'tmp/'
    remote_dir = '/tmp/'

    def __init__(self, gw, cfg, table):
        self.gw = gw
        self.cfg = cfg
        self.table = table
        self.env = None

    def local_fn(self, fn):
        return os.path.join(self.cfg.fw_dir, fn)

    def remote_fn(self, fn):
        return self.remote_dir + fn

    def check_images(self):
        if not self.cfg.ethaddr:
            raise FwError('Variable "ethaddr" not found in U-Boot env!')
        limits = [
            (self.spl_fn, fwlayout.SPL_SIZE),
            (self.uboot_fn, fwlayout.UBOOT_SIZE),
            (self.bitstream_fn, fwlayout.BITSTREAM_SIZE),
        ]
        for fn, max_size in limits:
            fn = self.local_fn(fn)
            if not os.path.isfile(fn):
                raise FwError(f'File "{fn}" not found!')
            size = os.path.getsize(fn)
            if size == 0:
                raise FwError(f'File "{fn}" is empty!')
            if size > max_size:
                raise FwError(f'File "{fn}" too large! (size: 0x{size:X}, max: 0x{max_size:X})')
        return True

    def build_env(self):
        t = self.table
        env = EnvBuffer()
        env.var = dict(self.cfg.env)
        env.set_env('ethaddr', self.cfg.ethaddr)
        # the slot written now becomes the active one
        env.set_env('image_flag', str(1 - t.image_flag))
        env.set_env('kernel_mtd', str(t.dst_kernel_mtd))
        env.set_env('kernel_off', '0x%X' % t.dst_kernel_off)
        env.set_env('stage2_off', '0x%X' % t.dst_stage2_off)
        env.set_env('stage3_off', '0x%X' % t.dst_stage3_off)
        env.set_env('bitstream_off', '0x%X' % t.bitstream_off)
        env.set_env('bitstream_size', file_size(self.local_fn(self.bitstream_fn)))
        self.env = env
        return env

    def save_env(self):
        env = self.env if self.env else self.build_env()
        os.makedirs(self.dn_tmp, exist_ok = True)
        fn = os.path.join(self.dn_tmp, self.env_fn)
        with open(fn, 'wb') as file:
            file.write(env.pack(fwlayout.UBOOT_ENV_SIZE))
        return fn

    def get_dst_mtds(self):
        mtds = [ ]
        for _, _, _, dst_mtd, _, _ in fwlayout.get_copy_list(self.table):
            if dst_mtd not in mtds:
                mtds.append(dst_mtd)
        return mtds

    def get_copy_cmds(self):
        cmds = [ ]
        for name, src_mtd, src_off, dst_mtd, dst_off, size in fwlayout.get_copy_list(self.table):
            cmd = f'nanddump -q -s 0x{src_off:X} -l 0x{size:X} {mtd_dev(src_mtd)}'
            cmd += f' | nandwrite -q -s 0x{dst_off:X} -p {mtd_dev(dst_mtd)} -'
            cmds.append(cmd)
        return cmds

    def get_write_cmds(self):
        t = self.table
        files = {
            'spl': self.spl_fn,
            'uboot': self.uboot_fn,
            'uboot_env1': self.env_fn,
            'uboot_env2': self.env_fn,
            'bitstream': self.bitstream_fn,
        }
        cmds = [ ]
        for name, mtd, off, size in fwlayout.get_write_list(t):
            blocks = (size + fwlayout.NAND_BLOCK_SIZE - 1) // fwlayout.NAND_BLOCK_SIZE
            cmds.append(f'flash_erase {mtd_dev(mtd)} 0x{off:X} {blocks}')
            cmds.append(f'nandwrite -q -s 0x{off:X} -p {mtd_dev(mtd)} {self.remote_fn(files[name])}')
        return cmds

    def get_cmds(self):
        cmds = [ eraseall_cmd(mtd) for mtd in self.get_dst_mtds() ]
        cmds += self.get_copy_cmds()
        cmds += self.get_write_cmds()
        cmds.append('sync')
        return cmds

    def upload_images(self):
        fn_env = self.save_env()
        for fn in [ self.spl_fn, self.uboot_fn, self.bitstream_fn ]:
            if not self.gw.upload(self.local_fn(fn), self.remote_fn(fn)):
                raise FwError(f'Can\'t upload file "{fn}"!')
        if not self.gw.upload(fn_env, self.remote_fn(self.env_fn)):
            raise FwError(f'Can\'t upload file "{self.env_fn}"!')

    def exec_cmd(self, cmd, timeout = 120):
        if self.gw.verbose:
            print(f'  {cmd}')
        if not self.gw.run_cmd(cmd, timeout = timeout, die_on_error = False):
            raise FwError(f'Error on execute command: "{cmd}"')

    def run(self):
        self.check_images()
        self.build_env()
        files = [ self.spl_fn, self.uboot_fn, self.bitstream_fn, self.env_fn ]
        try:
            print('Upload images...')
            self.upload_images()
            print('Copy firmware from image slot {} to slot {}...'.format(self.table.image_flag, 1 - self.table.image_flag))
            for mtd in self.get_dst_mtds():
                if not flash_eraseall(self.gw, mtd, msg = f'  {eraseall_cmd(mtd)}', die_on_error = False):
                    raise FwError(f'Can\'t erase partition "{mtd_dev(mtd)}"')
            for cmd in self.get_copy_cmds():
                self.exec_cmd(cmd)
            print('Write bootloader, env and bitstream...')
            for cmd in self.get_write_cmds():
                self.exec_cmd(cmd)
            self.exec_cmd('sync')
        finally:
            self.gw.run_cmd('rm -f ' + ' '.join([ self.remote_fn(fn) for fn in files ]), die_on_error = False)
        return True


def upgrade(gw, dev, fw_dir = 'firmware/'):
    cfg = read_config(dev, fw_dir)
    table = run_checks(cfg)
    print_offsets(table)
    fw = FwUpgrade(gw, cfg, table)
    fw.check_images()
    if not gw.img_write:
        print('img_write = False: commands are not executed')
        fw.build_env()
        for cmd in fw.get_cmds():
            print(f'  {cmd}')
        return fw
    fw.run()
    return fw


def main(argv = None, gw = None):
    argv = sys.argv if argv is None else argv
    args = [ arg for arg in argv[1:] if not arg.startswith('--') ]
    fw_dir = args[0] if args else 'firmware/'
    reboot_after = '--reboot' in argv
    if gw is None:
        gw = miner.Miner()
    dev = devinfo.DevInfo(gw, verbose = 1, infolevel = 2)
    try:
        upgrade(gw, dev, fw_dir)
    except UpgradeError as e:
        die(str(e))
    print('Firmware upgrade completed!')
    if reboot_after and gw.img_write:
        reboot.reboot_miner(gw)
    return 0


if __name__ == "__main__":
    sys.exit(main())
