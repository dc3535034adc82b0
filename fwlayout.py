#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import collections


# md5 of /proc/mtd on G19/G29 boards:
#   mtd0: 02000000 00020000 "boot"
#   mtd1: 04000000 00020000 "firmware1"
#   mtd2: 0a000000 00020000 "firmware2"
MTD_HASH = '375ed3e406ee45cee85d863eeeb939a3'

NAND_BLOCK_SIZE = 0x20000

SPL_SIZE       = 0x0080000
UBOOT_SIZE     = 0x0180000
UBOOT_ENV_SIZE = 0x0020000
BITSTREAM_SIZE = 0x0380000   # max size of FPGA bitstream
KERNEL_SIZE    = 0x0600000
STAGE2_SIZE    = 0x0800000
STAGE3_SIZE    = 0x0800000

SPL_OFF        = 0x0000000
UBOOT_OFF      = 0x0080000
UBOOT_ENV1_OFF = 0x0200000
UBOOT_ENV2_OFF = 0x0220000
BITSTREAM_OFF  = 0x0300000

# all of them live in "boot" partition
SPL_MTD        = 0
UBOOT_MTD      = 0
BITSTREAM_MTD  = 0


OffsetTable = collections.namedtuple('OffsetTable', [
    'image_flag',
    'spl_off', 'spl_mtd',
    'uboot_off', 'uboot_mtd',
    'uboot_env1_off', 'uboot_env2_off',
    'bitstream_off', 'bitstream_mtd',
    'src_kernel_off', 'dst_kernel_off', 'src_kernel_mtd', 'dst_kernel_mtd',
    'src_stage2_off', 'dst_stage2_off', 'src_stage2_mtd', 'dst_stage2_mtd',
    'src_stage3_off', 'dst_stage3_off', 'src_stage3_mtd', 'dst_stage3_mtd',
])


def _table(image_flag, src_mtd, dst_mtd, src_kernel, src_stage2, src_stage3, dst_kernel, dst_stage2, dst_stage3):
    return OffsetTable(
        image_flag = image_flag,
        spl_off = SPL_OFF, spl_mtd = SPL_MTD,
        uboot_off = UBOOT_OFF, uboot_mtd = UBOOT_MTD,
        uboot_env1_off = UBOOT_ENV1_OFF, uboot_env2_off = UBOOT_ENV2_OFF,
        bitstream_off = BITSTREAM_OFF, bitstream_mtd = BITSTREAM_MTD,
        src_kernel_off = src_kernel, dst_kernel_off = dst_kernel,
        src_kernel_mtd = src_mtd, dst_kernel_mtd = dst_mtd,
        src_stage2_off = src_stage2, dst_stage2_off = dst_stage2,
        src_stage2_mtd = src_mtd, dst_stage2_mtd = dst_mtd,
        src_stage3_off = src_stage3, dst_stage3_off = dst_stage3,
        src_stage3_mtd = src_mtd, dst_stage3_mtd = dst_mtd,
    )


OFFSET_TABLES = {
    0: _table(0, src_mtd = 0, dst_mtd = 2,
              src_kernel = 0x0840000, src_stage2 = 0x0E40000, src_stage3 = 0x1640000,
              dst_kernel = 0x7D00000, dst_stage2 = 0x8300000, dst_stage3 = 0x8B00000),
    1: _table(1, src_mtd = 0, dst_mtd = 1,
              src_kernel = 0x0680000, src_stage2 = 0x0C80000, src_stage3 = 0x1480000,
              dst_kernel = 0x1E00000, dst_stage2 = 0x2400000, dst_stage3 = 0x2C00000),
}


def parse_image_flag(image_flag):
    if isinstance(image_flag, bool):
        return None
    if isinstance(image_flag, int):
        return image_flag if image_flag in OFFSET_TABLES else None
    if isinstance(image_flag, str) and image_flag.strip() in ('0', '1'):
        return int(image_flag.strip())
    return None


def get_offsets(image_flag):
    flag = parse_image_flag(image_flag)
    if flag is None:
        raise ValueError(f'Unsupported image flag "{image_flag}"')
    return OFFSET_TABLES[flag]


def get_copy_list(table):
    # (name, src_mtd, src_off, dst_mtd, dst_off, size)
    return [
        ('kernel', table.src_kernel_mtd, table.src_kernel_off, table.dst_kernel_mtd, table.dst_kernel_off, KERNEL_SIZE),
        ('stage2', table.src_stage2_mtd, table.src_stage2_off, table.dst_stage2_mtd, table.dst_stage2_off, STAGE2_SIZE),
        ('stage3', table.src_stage3_mtd, table.src_stage3_off, table.dst_stage3_mtd, table.dst_stage3_off, STAGE3_SIZE),
    ]


def get_write_list(table):
    # (name, mtd, off, size) regions written in place
    return [
        ('spl', table.spl_mtd, table.spl_off, SPL_SIZE),
        ('uboot', table.uboot_mtd, table.uboot_off, UBOOT_SIZE),
        ('uboot_env1', table.uboot_mtd, table.uboot_env1_off, UBOOT_ENV_SIZE),
        ('uboot_env2', table.uboot_mtd, table.uboot_env2_off, UBOOT_ENV_SIZE),
        ('bitstream', table.bitstream_mtd, table.bitstream_off, BITSTREAM_SIZE),
    ]


def ranges_overlap(a_off, a_size, b_off, b_size):
    return a_off < b_off + b_size and b_off < a_off + a_size


def find_overlaps(table, src_table = None):
    """Return (written, source) name pairs whose flash ranges collide.

    Writes come from `table`, sources from `src_table` (defaults to `table`).
    """
    src_table = table if src_table is None else src_table
    sources = [ (name, mtd, off, size) for name, mtd, off, _, _, size in get_copy_list(src_table) ]
    written = [ (name, mtd, off, size) for name, _, _, mtd, off, size in get_copy_list(table) ]
    written += get_write_list(table)
    out = [ ]
    for w_name, w_mtd, w_off, w_size in written:
        for s_name, s_mtd, s_off, s_size in sources:
            if w_mtd == s_mtd and ranges_overlap(w_off, w_size, s_off, s_size):
                out.append((w_name, s_name))
    return out


def find_out_of_bounds(table, partlist):
    sizes = { part['num']: part['size'] for part in partlist }
    regions = [ (name, mtd, off, size) for name, mtd, off, _, _, size in get_copy_list(table) ]
    regions += [ (name, mtd, off, size) for name, _, _, mtd, off, size in get_copy_list(table) ]
    regions += get_write_list(table)
    out = [ ]
    for name, mtd, off, size in regions:
        if mtd not in sizes or off + size > sizes[mtd]:
            out.append((name, mtd))
    return out
