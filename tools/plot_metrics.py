#!/usr/bin/env python
"""
Plot saved song results as a simple coherence dashboard.

Outputs:
- outputs/plots/coherence_dashboard.png
- outputs/plots/top_songs.csv (ranked table for analysis)

Usage:
  python tools/plot_metrics.py
  # or with custom paths:
  python tools/plot_metrics.py --results outputs/results.csv --outdir outputs/plots --top 15
"""
from __future__ import annotations
import argparse
import sys
from pathlib import Path
import pandas as pd
import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hrvxo.store.results import ResultStore

def build_dashboard(store: ResultStore, outdir: Path, top: int = 15) -> Path:
    songs = pd.DataFrame(store.top_coherence_songs(top))
    trend = pd.DataFrame(store.coherence_trend())
    if songs.empty:
        raise ValueError(f"No results in {store.path}")

    songs.to_csv(outdir / "top_songs.csv", index=False)

    fig, axes = plt.subplots(1, 2, figsize=(13, 6), dpi=120)

    # Panel 1: top songs (best at the top)
    ax = axes[0]
    labels = [f"{t[:28]} - {a[:16]}" if a else t[:44] for t, a in zip(songs["title"], songs["artist"])]
    y = np.arange(len(songs))
    ax.barh(y, songs["avg_coherence"])
    ax.set_yticks(y)
    ax.set_yticklabels(labels, fontsize=7)
    ax.invert_yaxis()
    ax.set_xlabel("Mean coherence")
    ax.set_title(f"Top {len(songs)} songs by coherence")
    ax.grid(True, axis="x", linestyle=":", alpha=0.5)

    # Panel 2: per-session trend
    ax = axes[1]
    if not trend.empty:
        dates = pd.to_datetime(trend["session_date"], unit="ms")
        ax.plot(dates, trend["avg_coherence"], marker="o")
        fig.autofmt_xdate()
    ax.set_ylabel("Mean coherence")
    ax.set_title("Coherence per session")
    ax.grid(True, linestyle=":", alpha=0.5)

    fig.suptitle("HrvXo Coherence Dashboard", y=0.98)
    fig.tight_layout()
    out = outdir / "coherence_dashboard.png"
    fig.savefig(out)
    plt.close(fig)
    return out

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--results", default="outputs/results.csv")
    ap.add_argument("--outdir", default="outputs/plots")
    ap.add_argument("--top", type=int, default=15)
    args = ap.parse_args()

    results_path = Path(args.results)
    if not results_path.exists():
        raise FileNotFoundError(f"Missing: {results_path}")
    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    out = build_dashboard(ResultStore(results_path), outdir, top=args.top)

    print(f"[OK] Wrote: {out}")
    print(f"[OK] Wrote: {outdir / 'top_songs.csv'}")

if __name__ == "__main__":
    main()
