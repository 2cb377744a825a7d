"""
Plot graphs from the run_experiments.py CSV.
Produces:
 - plots/time_vs_threads_<WxH>.png
 - plots/speedup_vs_threads_<WxH>.png
 - plots/efficiency_vs_threads_<WxH>.png
 - plots/cpu_avg_vs_threads_<WxH>.png
 - plots/time_vs_resolution.png (one line per worker count)
"""

import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import os
import argparse
import numpy as np

def load_results(csv_path):
    df = pd.read_csv(csv_path)
    for col in ('time_ms', 'cpu_avg', 'cpu_max'):
        if col not in df.columns:
            df[col] = 0.0
        else:
            df[col] = pd.to_numeric(df[col], errors='coerce').fillna(0.0)
    df['threads'] = pd.to_numeric(df['threads'], errors='coerce').fillna(1).astype(int)
    df['pixels'] = df['width'] * df['height']
    return df

def scaling_table(df, width, height):
    """Median time and CPU per worker count, with speedup and efficiency against the 1-worker run."""
    sub = df[(df['width']==width) & (df['height']==height)]
    g = sub.groupby('threads')[['time_ms', 'cpu_avg']].median().reset_index().sort_values('threads')
    seq = g[g['threads']==1]['time_ms']
    seq_time = float(seq.iloc[0]) if not seq.empty else float(g['time_ms'].iloc[0])
    g['speedup'] = seq_time / g['time_ms'].replace(0, np.nan)
    g['efficiency'] = g['speedup'] / g['threads']
    return g

def _line_plot(x, y, xlabel, ylabel, title, path, ideal=None):
    plt.figure()
    plt.plot(x, y, marker='o', label='Measured')
    if ideal is not None:
        plt.plot(x, ideal, linestyle='--', label='Ideal')
        plt.legend()
    plt.xlabel(xlabel)
    plt.ylabel(ylabel)
    plt.title(title)
    plt.grid(True)
    plt.savefig(path, dpi=200)
    plt.close()

def plot_for_resolution(df, width, height, outdir):
    g = scaling_table(df, width, height)
    os.makedirs(outdir, exist_ok=True)
    res = f"{width}x{height}"
    _line_plot(g['threads'], g['time_ms'], 'Threads', 'Time (ms)', f'Time vs Threads ({res})',
               os.path.join(outdir, f"time_vs_threads_{res}.png"))
    _line_plot(g['threads'], g['speedup'], 'Threads', 'Speedup', f'Speedup vs Threads ({res})',
               os.path.join(outdir, f"speedup_vs_threads_{res}.png"), ideal=g['threads'])
    _line_plot(g['threads'], g['efficiency'], 'Threads', 'Efficiency', f'Efficiency vs Threads ({res})',
               os.path.join(outdir, f"efficiency_vs_threads_{res}.png"))
    _line_plot(g['threads'], g['cpu_avg'], 'Threads', 'CPU Avg (%)', f'CPU Avg vs Threads ({res})',
               os.path.join(outdir, f"cpu_avg_vs_threads_{res}.png"))

def plot_time_vs_resolution(df, outdir):
    os.makedirs(outdir, exist_ok=True)
    plt.figure()
    for threads, sub in df.groupby('threads'):
        g = sub.groupby('pixels')['time_ms'].median().reset_index().sort_values('pixels')
        label = 'sequential' if threads == 1 else f'{threads} workers'
        plt.plot(g['pixels'], g['time_ms'], marker='o', label=label)
    plt.xscale('log')
    plt.yscale('log')
    plt.xlabel('Pixels (log)')
    plt.ylabel('Time (ms) (log)')
    plt.title('Time vs Resolution')
    plt.legend()
    plt.grid(True)
    plt.savefig(os.path.join(outdir, "time_vs_resolution.png"), dpi=200)
    plt.close()

def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--csv', default='results/results.csv')
    parser.add_argument('--outdir', default='plots')
    args = parser.parse_args()

    df = load_results(args.csv)
    for w, h in df[['width','height']].drop_duplicates().values.tolist():
        plot_for_resolution(df, int(w), int(h), args.outdir)
    plot_time_vs_resolution(df, args.outdir)

    print("Plots saved in", args.outdir)

if __name__ == '__main__':
    main()
