#
#  machpatch | machpatch
#  cli.py
#
#  Command line interface
#
#  This file is part of machpatch. machpatch is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
import argparse
import sys

from machpatch.exceptions import (MalformedMachOException, UnsupportedFiletypeException, NotFoundError,
                                  ConversionError, InvalidArgumentError, BuildError)
from machpatch.machpatch import load_binary, write_binary, dump_binary
from machpatch.util import MACHPATCH_VERSION, ignore, opts, machpatch_print
from libmach.log import log, LogLevel

ERRORS = (MalformedMachOException, UnsupportedFiletypeException, NotFoundError, ConversionError,
          InvalidArgumentError, BuildError)


def _int(value: str) -> int:
    return int(value, 0)


def _hex_bytes(value: str) -> bytes:
    try:
        return bytes.fromhex(value.replace(' ', ''))
    except ValueError:
        raise argparse.ArgumentTypeError(f'invalid hex string: {value}')


def info(args):
    binary = load_binary(args.filename, slice_index=args.slice)
    if args.json:
        machpatch_print(dump_binary(binary, color=not opts.DISABLE_COLOR))
    else:
        machpatch_print(str(binary))


def resolve(args):
    binary = load_binary(args.filename, slice_index=args.slice)
    offset = binary.virtual_address_to_offset(args.address)
    segment = binary.segment_from_virtual_address(args.address)
    machpatch_print(f'{hex(args.address)} -> {hex(offset)} ({segment.name})')


def read(args):
    binary = load_binary(args.filename, slice_index=args.slice)
    data = binary.get_content_from_virtual_address(args.address, args.size)
    machpatch_print(data.hex())


def patch(args):
    binary = load_binary(args.filename, slice_index=args.slice)

    if args.bytes is None and args.int is None and not args.disable_pie:
        raise SystemExit('nothing to do, pass --bytes, --int or --disable-pie')

    if args.bytes is not None:
        binary.patch_address(args.address, args.bytes)
    if args.int is not None:
        binary.patch_address(args.address, args.int, args.width)
    if args.disable_pie and not binary.disable_pie():
        log.warn('Image is not PIE')

    write_binary(binary, args.output or args.filename)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Inspect and patch Mach-O images',
        prog='machpatch',
    )
    parser.add_argument('-v', '--verbose', action='count', default=0, help='more logging, repeat for more')
    parser.add_argument('--no-color', action='store_true', help='disable syntax highlighting')
    parser.add_argument('--ignore-malformed', action='store_true', help='load malformed images anyway')
    parser.add_argument('--version', action='version', version=f'machpatch {MACHPATCH_VERSION}')
    parser.add_argument('--slice', type=int, default=0, help='slice index to load from a FAT file (default 0)')

    subparsers = parser.add_subparsers(dest='command')
    subparsers.required = True

    info_parser = subparsers.add_parser('info', help='print the header, load commands, sections and symbols')
    info_parser.add_argument('filename', type=str)
    info_parser.add_argument('-j', '--json', action='store_true', help='print as JSON')
    info_parser.set_defaults(func=info)

    resolve_parser = subparsers.add_parser('resolve', help='translate a virtual address to a file offset')
    resolve_parser.add_argument('filename', type=str)
    resolve_parser.add_argument('address', type=_int)
    resolve_parser.set_defaults(func=resolve)

    read_parser = subparsers.add_parser('read', help='hexdump bytes at a virtual address')
    read_parser.add_argument('filename', type=str)
    read_parser.add_argument('address', type=_int)
    read_parser.add_argument('size', type=_int)
    read_parser.set_defaults(func=read)

    patch_parser = subparsers.add_parser('patch', help='patch bytes at a virtual address and write the image')
    patch_parser.add_argument('filename', type=str)
    patch_parser.add_argument('address', type=_int, nargs='?', default=0)
    patch_parser.add_argument('-b', '--bytes', type=_hex_bytes, help='hex string to write')
    patch_parser.add_argument('-i', '--int', type=_int, help='integer to write')
    patch_parser.add_argument('-w', '--width', type=_int, default=8, help='integer width in bytes (default 8)')
    patch_parser.add_argument('--disable-pie', action='store_true', help='clear the PIE flag')
    patch_parser.add_argument('-o', '--output', type=str, help='output file (default: patch in place)')
    patch_parser.set_defaults(func=patch)

    args = parser.parse_args(argv)

    log.LOG_LEVEL = LogLevel(min(LogLevel.ERROR.value + args.verbose, LogLevel.DEBUG_TOO_MUCH.value))
    opts.DISABLE_COLOR = args.no_color or not sys.stdout.isatty()
    ignore.MALFORMED = args.ignore_malformed

    try:
        args.func(args)
    except FileNotFoundError:
        raise SystemExit(f'missing input file: {args.filename}')
    except ERRORS as ex:
        log.error(f'{type(ex).__name__}: {ex}')
        raise SystemExit(1)


if __name__ == '__main__':
    main()
