#!/usr/bin/env python3
"""
Script to upload local files to Cloudflare R2 through the presigning broker.

Files go straight to storage using presigned URLs; only the broker holds
R2 credentials. Files above UPLOAD_MULTIPART_THRESHOLD_MB use multipart.

Usage:
    # Upload two files under a timestamped prefix:
    python upload_files.py report.pdf photo.jpg --prefix orders/42 --unique

    # Against a specific broker, enforcing a size/type policy:
    UPLOAD_BROKER_URL=https://broker.example.com python upload_files.py *.png \
        --max-size-mb 10 --allow "image/*"

    # Print a presigned read-back URL for each uploaded file:
    python upload_files.py notes.txt --read-back
"""
import argparse
import asyncio
import sys

from r2upload.config import settings
from r2upload.storage import BatchUploadOrchestrator, UploadError, UploadSource, unique_prefix
from r2upload.storage.validation import ValidationOptions, format_file_size
from r2upload.utils.logging import configure_logging


def load_sources(paths):
    """Build upload sources, skipping paths that cannot be read."""
    sources = []
    for path in paths:
        try:
            sources.append(UploadSource.from_path(path))
        except OSError as e:
            print(f"  SKIPPED: {path}: {e.strerror or e}")
    return sources


def validation_from_args(args):
    if args.max_size_mb is None and not args.allow:
        return settings.validation_options()
    defaults = settings.validation_options()
    max_bytes = (
        int(args.max_size_mb * 1024 * 1024) if args.max_size_mb is not None else defaults.max_size_bytes
    )
    allowed = tuple(args.allow) if args.allow else defaults.allowed_types
    return ValidationOptions(max_size_bytes=max_bytes, allowed_types=allowed)


def print_progress(event):
    name = event.filename or ""
    sys.stdout.write(
        f"\r  [{event.completed_files}/{event.total_files}] {event.percentage:5.1f}%  {name[:40]:<40}"
    )
    sys.stdout.flush()


async def run(args, sources):
    prefix = unique_prefix(args.prefix) if args.unique else args.prefix
    validation = validation_from_args(args)

    async with BatchUploadOrchestrator(settings.uploader_config()) as uploader:
        results = await uploader.upload_all(
            sources,
            prefix=prefix,
            validation=validation,
            on_progress=None if args.quiet else print_progress,
        )
        if not args.quiet:
            print()

        read_urls = {}
        if args.read_back:
            for result in results:
                if result.ok:
                    try:
                        read_urls[result.key] = await uploader.presign_get(result.key)
                    except UploadError as e:
                        print(f"  ERROR presigning {result.key}: {e}")

    return results, read_urls


def print_summary(sources, results, read_urls):
    uploaded = [r for r in results if r.ok]
    aborted = [r for r in results if not r.ok and r.aborted]
    failed = [r for r in results if not r.ok and not r.aborted]

    print()
    for source, result in zip(sources, results):
        if result.ok:
            print(f"  OK      {source.name} -> {result.key} ({format_file_size(result.size)})")
            if result.key in read_urls:
                print(f"          {read_urls[result.key]}")
        elif result.aborted:
            print(f"  ABORTED {source.name}: {result.reason}")
        else:
            print(f"  FAILED  {source.name}: {result.reason}")

    total_bytes = sum(r.size for r in uploaded)
    print(f"\n{'='*50}")
    print("SUMMARY:")
    print(f"  Total files: {len(results)}")
    print(f"  Uploaded: {len(uploaded)} ({format_file_size(total_bytes)})")
    print(f"  Failed: {len(failed)}")
    print(f"  Aborted: {len(aborted)}")
    print(f"{'='*50}")
    return not failed and not aborted


def main():
    parser = argparse.ArgumentParser(description='Upload files to Cloudflare R2 via presigned URLs')
    parser.add_argument('files', nargs='+', help='Files to upload')
    parser.add_argument('--prefix', '-p', default=None,
                        help='Logical path prepended to every object key')
    parser.add_argument('--unique', '-u', action='store_true',
                        help='Append a timestamp + random suffix to the prefix')
    parser.add_argument('--max-size-mb', type=float, default=None,
                        help='Reject files larger than this (default: UPLOAD_MAX_SIZE_MB)')
    parser.add_argument('--allow', action='append', default=[],
                        help='Allowed MIME type, repeatable; supports wildcards like image/*')
    parser.add_argument('--read-back', action='store_true',
                        help='Print a presigned GET URL for each uploaded file')
    parser.add_argument('--quiet', '-q', action='store_true', help='No progress output')
    args = parser.parse_args()

    configure_logging('r2-upload-cli', settings.log_level)

    print("=" * 50)
    print("CLOUDFLARE R2 - UPLOAD FILES")
    print("=" * 50)
    print(f"Broker: {settings.uploader_config().broker_base_url}")
    print()

    sources = load_sources(args.files)
    if not sources:
        print("No readable files to upload.")
        sys.exit(1)

    try:
        results, read_urls = asyncio.run(run(args, sources))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)

    ok = print_summary(sources, results, read_urls)
    print("\n✅ Done!" if ok else "\n❌ Some files did not upload.")
    sys.exit(0 if ok else 1)


if __name__ == '__main__':
    main()
