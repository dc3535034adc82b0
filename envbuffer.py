#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import binascii


class EnvBuffer():
  var = {}         # key=value
  len = 0
  encoding = 'latin_1'
  crc_prefix = True
  delim = '\x00'

  def __init__(self, data = None, delim = '\x00', crc_prefix = True, encoding = 'latin_1'):
    self.encoding = encoding
    self.delim = delim
    self.crc_prefix = crc_prefix
    self.var = {}
    if data is not None:
      prefix_len = 4 if crc_prefix else 0
      if isinstance(data, str):
        self.var = self.parse_env(data, delim)
      else:
        end = data.find((delim + delim).encode(encoding), prefix_len)
        if (end > prefix_len):
          data = data[prefix_len:end+1]
          self.var = self.parse_env(data.decode(encoding), delim)

  @classmethod
  def from_printenv(cls, text):
    # fw_printenv prints one "key=value" per line
    return cls(text, delim = '\n', crc_prefix = False)

  def parse_env(self, data, delim):
    dict = {}
    self.len = len(data)
    for s in data.split(delim):
      s = s.strip()
      if len(s) < 1:
        continue
      x = s.find('=')
      if x == 0:
        continue
      if x >= 1:
        key = (s[0:x]).strip()
        if key:
          dict[key] = (s[x+1:]).strip()
      else:
        dict[s] = None
    return dict

  def get_env(self, key, defvalue = None):
    return self.var[key] if key in self.var else defvalue

  def set_env(self, key, value):
    self.var[key] = value

  def pack(self, bufsize, crc_prefix = None, encoding = None):
    crc_prefix = crc_prefix if crc_prefix is not None else self.crc_prefix
    encoding = encoding if encoding is not None else self.encoding
    buf = b''
    for k, v in self.var.items():
      v = '' if (v is None) else ('=' + str(v))
      buf += (k + v + '\x00').encode(encoding)
    if len(buf) + 64 > bufsize:
      raise OSError("Buffer overflow")
    prefix_len = 4 if crc_prefix else 0
    buf += b'\x00' * (bufsize - len(buf) - prefix_len)
    if crc_prefix:
      crc = binascii.crc32(buf)
      buf = (crc).to_bytes(4, byteorder='little') + buf
    return buf
