from __future__ import annotations

import gzip
import os
import urllib.request
from pathlib import Path

ENSEMBL_FTP = "https://ftp.ensembl.org/pub"
DEFAULT_SPECIES = "Mus musculus"


def ensembl_gtf_url(species: str, release: int, assembly: str) -> str:
    """URL of the Ensembl GTF, e.g. release-88/gtf/mus_musculus/Mus_musculus.GRCm38.88.gtf.gz"""
    sp = species.strip().replace(" ", "_")
    return f"{ENSEMBL_FTP}/release-{release}/gtf/{sp.lower()}/{sp.capitalize()}.{assembly}.{release}.gtf.gz"


def _is_gzip_file(path: Path) -> bool:
    with open(path, "rb") as fh:
        return fh.read(2) == b"\x1f\x8b"


def _first_line_text(path: Path) -> str:
    # read first line whether gzip or plain
    if _is_gzip_file(path):
        with gzip.open(path, "rt", encoding="utf-8", errors="replace") as fh:
            return fh.readline()
    else:
        with open(path, "rt", encoding="utf-8", errors="replace") as fh:
            return fh.readline()


def download_ensembl_gtf(
        dest: str | os.PathLike,
        *,
        species: str = DEFAULT_SPECIES,
        release: int | None = None,
        assembly: str | None = None,
        force: bool = False,
        url: str | None = None,
) -> Path:
    """
    Download an Ensembl GTF (gz or plain) to 'dest'. If dest ends with .gtf and the
    download is gzipped, auto-decompress; otherwise keep as-is.
    Either url, or release and assembly, must be given.
    """
    if url is None:
        if release is None or assembly is None:
            raise ValueError("Give either url, or both release and assembly")
        url = ensembl_gtf_url(species, release, assembly)
    out = Path(dest)
    out.parent.mkdir(parents=True, exist_ok=True)

    if out.exists() and not force:
        raise FileExistsError(f"Destination exists: {out}")

    tmp = out.with_suffix(out.suffix + ".partial")
    try:
        # stream download
        with urllib.request.urlopen(url) as resp, open(tmp, "wb") as fh:
            while True:
                chunk = resp.read(65536)
                if not chunk:
                    break
                fh.write(chunk)

        is_gz = _is_gzip_file(tmp)

        if out.suffix.lower() == ".gtf" and is_gz:
            with gzip.open(tmp, "rb") as gz, open(out, "wb") as outfh:
                outfh.write(gz.read())
            tmp.unlink(missing_ok=True)
        else:
            if out.exists():
                out.unlink()
            tmp.rename(out)

        # Ensembl GTFs open with #!genome-build style headers
        first = _first_line_text(out).strip()
        if first.startswith("<"):
            raise RuntimeError("Server likely returned HTML instead of GTF (wrong URL or needs a direct file link).")
        if not first.startswith("#!") and len(first.split("\t")) < 9:
            raise RuntimeError(f"Downloaded file does not look like GTF (first line: {first!r}).")

        return out

    except Exception as e:
        tmp.unlink(missing_ok=True)
        raise RuntimeError(f"Download failed: {e}") from e
