"""CI README generator."""

from __future__ import annotations

from git_standalone_builder.config import BuildConfig


def _format_size(size: int) -> str:
    for unit in ("B", "KiB", "MiB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


def generate_readme(tag: str, config: BuildConfig, manifest: dict) -> str:
    archive = manifest.get("archive", {})
    files = manifest.get("files", {})
    version = tag.lstrip("vV")
    title = f"Standalone Git {version} (linux-x64)"
    readme = f"""---
tags:
- git
- standalone
- reproducible-build
---

# {title}

Relocatable build of [{config.upstream_repo}](https://github.com/{config.upstream_repo}) at tag `{tag}`,
stripped down to HTTPS-capable operation.

## Usage

Extract the archive anywhere and call the launcher instead of `bin/git`:

```sh
tar -xzf {archive.get("name", "git-standalone.tar.gz")}
./git-standalone/{config.launcher_name} --version
```

The launcher prepends the bundled `lib/` to `LD_LIBRARY_PATH` and `{config.helper_dir}` to `PATH`.

## Files

- `{archive.get("name", "(archive)")}`: bundle archive ({_format_size(int(archive.get("size", 0)))})
- `build_manifest.json`: build manifest (environment, stages, per-file SHA-256)

Archive SHA-256: `{archive.get("sha256", "unknown")}`

## Build environment

- `SOURCE_DATE_EPOCH={config.source_date_epoch}`, `TZ={config.timezone}`, `LC_ALL={config.locale}`
- `CFLAGS={config.cflags} -ffile-prefix-map=<src>=.`
- `LDFLAGS={config.ldflags}`
- configure: `--prefix={config.prefix} {" ".join(config.configure_args)}`

## Contents
"""

    for rel in files:
        if rel.startswith(("bin/", "lib/", f"{config.helper_dir}/")) or rel == config.launcher_name:
            readme += f"\n- `{rel}`"

    readme += "\n\n## Notes\n\n- glibc is not bundled; the host must provide it.\n"
    return readme
