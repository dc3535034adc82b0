#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import json
import time
import datetime
import random
import hashlib
import socket
import atexit

import requests
import ssh2
import ssh2.session
import ssh2.exceptions

if sys.version_info < (3,8,0):
  print("ERROR: Requires Python v3.8 or higher!")
  sys.exit(1)


def die(*args):
  err = 1
  prefix = "ERROR: "
  msg = "<undefined>"
  if len(args) > 0:
    if isinstance(args[0], int):
      err = args[0]
    else:
      msg = args[0]
  if (err == 0):
    prefix = ""
  if len(args) > 1:
    msg = args[1]
  out = sys.stdout if err == 0 else sys.stderr
  print(" ", file = out)
  print(prefix + msg, file = out)
  print(" ", file = out)
  sys.exit(err)


class Miner():
  def __init_fields(self):
    self.verbose = 2
    self.con_timeout = 2
    self.timeout = 4
    self.socket = None  # TCP socket for SSH
    self.ssh = None     # SSH session
    self.login = 'root' # default username
    self.user_agent = "curl/8.4.0"
    self.cfg_fn = 'config.txt'

  def __init__(self, timeout = 4, verbose = 2, detect_ssh = True, cfg_fn = None):
    random.seed()
    self.__init_fields()
    self.verbose = verbose
    self.timeout = timeout
    if cfg_fn:
      self.cfg_fn = cfg_fn
    atexit.register(self.ssh_close)
    os.makedirs('tmp', exist_ok = True)
    if detect_ssh:
      if not self.ping(verbose = 0, contimeout = self.con_timeout):
        die("Can't found valid SSH server on IP {}".format(self.ip_addr))

  #===============================================================================
  @property
  def ip_addr(self):
    return self.get_config_param('device_ip_addr', '192.168.1.254').strip()

  @ip_addr.setter
  def ip_addr(self, value):
    self.set_config_param('device_ip_addr', value)

  @property
  def ssh_port(self):
    return int(self.get_config_param('ssh_port', 22))

  @property
  def passw(self):
    return self.get_config_param('passw', 'admin')  # password for root user

  @property
  def img_write(self):
    return self.get_config_param('img_write', True)

  #===============================================================================
  def load_config(self):
    config = {}
    if os.path.exists(self.cfg_fn):
      with open(self.cfg_fn, 'r') as file:
        config = json.load(file)
    return config

  def get_config_param(self, key, defvalue = None):
    config = self.load_config()
    return config[key] if key in config else defvalue

  def set_config_param(self, key, value):
    config = self.load_config()
    config[key] = value.strip() if isinstance(value, str) else value
    self.save_config(config)

  def save_config(self, config):
    with open(self.cfg_fn, 'w') as file:
      json.dump(config, file, indent=4, sort_keys=True)

  #===============================================================================
  def ssh_close(self):
    try:
      self.ssh.disconnect()
    except Exception:
      pass
    try:
      self.socket.close()
    except Exception:
      pass
    self.ssh = None
    self.socket = None

  def get_ssh(self, verbose = 0, contimeout = None):
    if self.ssh:
      try:
        self.ssh.keepalive_send()
        return self.ssh
      except Exception:
        pass
    self.ssh_close()
    try:
      contimeout = 1 if contimeout is None else contimeout
      start_time = datetime.datetime.now()
      while datetime.datetime.now() - start_time <= datetime.timedelta(seconds = contimeout):
        try:
          self.socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
          self.socket.settimeout(0.5)
          self.socket.connect((self.ip_addr, self.ssh_port))
          break
        except OSError:
          self.socket = None
      if not self.socket:
        raise ConnectionError(f'No TCP connect to {self.ip_addr}:{self.ssh_port}')
      self.socket.settimeout(None)  # enable blocking mode
      self.ssh = ssh2.session.Session()
      self.ssh.handshake(self.socket)
      self.ssh.userauth_password(self.login, self.passw)
      self.ssh.set_blocking(True)
      self.ssh.set_timeout(int(self.timeout * 1000))
      return self.ssh
    except Exception:
      if verbose:
        die("SSH server not responding (IP: {})".format(self.ip_addr))
      self.ssh_close()
    return None

  def ping(self, verbose = 2, contimeout = None):
    ssh = self.get_ssh(verbose, contimeout)
    if not ssh:
      return False
    return True

  #===============================================================================
  def run_cmd(self, cmd, msg = None, timeout = None, die_on_error = True):
    ret = True
    ssh = self.get_ssh(self.verbose)
    if (msg):
      print(msg)
    cmdlist = [ cmd ] if isinstance(cmd, str) else cmd
    for idx, cmd in enumerate(cmdlist):
      channel = ssh.open_session()
      if timeout is not None:
        saved_timeout = ssh.get_timeout()
        ssh.set_timeout(int(timeout * 1000))
      channel.execute(cmd)
      try:
        channel.wait_eof()
      except ssh2.exceptions.Timeout:
        ssh.set_timeout(100)
        ret = False
        if die_on_error:
          die("SSH execute command timed out! CMD: \"{}\"".format(cmd))
      if timeout is not None:
        ssh.set_timeout(saved_timeout)
      status = None
      try:
        channel.close()
        channel.wait_closed()
        status = channel.get_exit_status()
      except Exception:
        pass
      if ret and status:
        ret = False
        if die_on_error:
          die("Command failed with status {}! CMD: \"{}\"".format(status, cmd))
      if not ret:
        break
    return ret

  def run_command(self, cmd, fn = None, encoding = "latin_1", verbose = 0):
    if not fn:
      fn = hex(random.getrandbits(64)) + '.txt'
      fn = fn[1:]
    fn_local  = f'tmp/{fn}'
    fn_remote = f'/tmp/{fn}'
    if os.path.exists(fn_local):
      os.remove(fn_local)
    if '>' not in cmd:
      cmd += " > " + fn_remote
    try:
      self.run_cmd(cmd, die_on_error = False)
      self.download(fn_remote, fn_local, verbose = verbose)
      self.run_cmd("rm -f " + fn_remote, die_on_error = False)
    except Exception:
      return None
    if not os.path.exists(fn_local):
      return None
    if os.path.getsize(fn_local) <= 0:
      return None
    with open(fn_local, 'r', encoding = encoding) as file:
      output = file.read()
    os.remove(fn_local)
    return output

  def download(self, fn_remote, fn_local, verbose = 1):
    if verbose and self.verbose:
      print('Download file: "{}" ....'.format(fn_remote))
    ssh = self.get_ssh(self.verbose)
    channel, fileinfo = ssh.scp_recv2(fn_remote)
    total_size = fileinfo.st_size
    read_size = 0
    with open(fn_local, 'wb') as file:
      while read_size < total_size:
        size, data = channel.read()
        if size > 0:
          if read_size + len(data) > total_size:
            file.write(data[:total_size - read_size])
          else:
            file.write(data)
          read_size += size
    return True

  def upload(self, fn_local, fn_remote, md5chk = True, verbose = 1):
    if not os.path.exists(fn_local):
      die(f'File "{fn_local}" not found.')
    if md5chk:
      md5_local = self.get_md5_for_local_file(fn_local)
    if verbose and self.verbose:
      print('Upload file: "{}" ....'.format(fn_local))
    ssh = self.get_ssh(self.verbose)
    finfo = os.stat(fn_local)
    with open(fn_local, 'rb') as file:
      channel = ssh.scp_send64(fn_remote, finfo.st_mode & 0o777, finfo.st_size, int(finfo.st_mtime), int(finfo.st_atime))
      for data in iter(lambda: file.read(32*1024), b''):
        channel.write(data)
      channel.send_eof()
      channel.wait_eof()
      channel.close()
      channel.wait_closed()
    if md5chk:
      md5_remote = self.get_md5_for_remote_file(fn_remote)
      if md5_remote != md5_local:
        if md5chk == 2:
          die(f'File "{fn_local}" uploaded, but MD5 incorrect!')
        print(f'ERROR: File "{fn_local}" uploaded, but MD5 incorrect!', file = sys.stderr)
        return False
    return True

  def get_md5_for_remote_file(self, fn_remote):
    fn = 'md5_%d.txt' % random.randint(10000, 1000000)
    md5 = self.run_command(f'md5sum "{fn_remote}" > /tmp/{fn} 2>&1', fn)
    if not md5:
      return -3
    if md5.startswith('md5sum:'):
      return -2
    md5 = md5.split(' ')[0]
    md5 = md5.strip()
    if len(md5) != 32:
      return -1
    return md5.lower()

  def get_md5_for_local_file(self, fn_local):
    hasher = hashlib.md5()
    bs = 512*1024
    with open(fn_local, 'rb') as file:
      for chunk in iter(lambda: file.read(bs), b''):
        hasher.update(chunk)
    return hasher.hexdigest()

  #===============================================================================
  def web_ping(self, con_timeout, wait_timeout = 0):
    ret = True
    start_time = datetime.datetime.now()
    try:
      headers = { "User-Agent": self.user_agent }
      requests.get(f"http://{self.ip_addr}/", headers = headers, timeout = (con_timeout, 4))
    except requests.exceptions.RequestException:
      ret = False
    if wait_timeout > 0:
      dt = wait_timeout - (datetime.datetime.now() - start_time).total_seconds()
      if dt > 0:
        time.sleep(dt)
    return ret

  def wait_shutdown(self, timeout, verbose = 1):
    if verbose:
      print('Waiting for shutdown: ', end='', flush=True)
    start_time = datetime.datetime.now()
    while datetime.datetime.now() - start_time <= datetime.timedelta(seconds = timeout):
      if verbose:
        print('.', end='', flush=True)
      if self.web_ping(1, 1) is False:
        if verbose:
          print('.', flush=True)
        self.ssh_close()
        return True
    if verbose:
      print('timedout', flush=True)
    return False

  def wait_reboot(self, timeout, verbose = 1):
    if verbose:
      print('Waiting for reboot: ', end='', flush=True)
    start_time = datetime.datetime.now()
    while datetime.datetime.now() - start_time <= datetime.timedelta(seconds = timeout):
      if verbose:
        print('.', end='', flush=True)
      if self.web_ping(1, 1) is True:
        if verbose:
          print('on', flush=True)
        return True
    if verbose:
      print('timedout', flush=True)
    return False


#===============================================================================
if __name__ == "__main__":
  if len(sys.argv) > 1:
    ip_addr = sys.argv[1]
    gw = Miner(detect_ssh = False)
    gw.ip_addr = ip_addr
    print("Device IP-address changed to {}".format(ip_addr))
