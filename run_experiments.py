"""
Batch runner: renders every resolution sequentially and with each worker count,
logs timings to CSV and checks each parallel image against the sequential one.

Usage:
  python run_experiments.py --out results/results.csv --threads 1,2,4,8 --res 256x256,512x512
"""

import subprocess, csv, os, sys, argparse, time, statistics

from compare_images import compare

DEFAULT_THREADS = [1,2,4,8,16]
DEFAULT_RES = ["256x256","512x512","1024x1024"]
DEFAULT_TILE = 16
DEFAULT_SPHERES = 10
REPEATS = 3
RAYTRACER = os.path.join(os.path.dirname(os.path.abspath(__file__)), "raytracer.py")

FIELDS = [
    "threads","width","height","tile","spheres","run_index",
    "time_ms","cpu_avg","cpu_max","identical","outfile"
]

def parse_stats(text):
    """Collect `KEY: value` lines printed by raytracer.py."""
    stats = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition(":")
        if sep and key.isupper():
            stats[key] = value.strip()
    return stats

def run_one(w, h, threads, tile, spheres, outfile):
    cmd = [
        sys.executable,RAYTRACER,
        "--width",str(w),
        "--height",str(h),
        "--spheres",str(spheres),
        "--threads",str(threads),
        "--tile",str(tile),
        "--outfile",outfile,
        "--mode","parallel" if threads>1 else "sequential"
    ]
    proc = subprocess.run(cmd, capture_output=True, text=True)
    if proc.returncode != 0:
        raise RuntimeError(f"{' '.join(cmd)} exited with {proc.returncode}:\n{proc.stderr}")
    stats = parse_stats(proc.stderr)
    return (float(stats.get("RENDER_TIME_MS", 0.0)),
            float(stats.get("CPU_AVG", 0.0)),
            float(stats.get("CPU_MAX", 0.0)))

def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--out', default='results/results.csv')
    parser.add_argument('--threads', default=",".join(str(t) for t in DEFAULT_THREADS))
    parser.add_argument('--res', default=",".join(DEFAULT_RES))
    parser.add_argument('--tile', type=int, default=DEFAULT_TILE)
    parser.add_argument('--spheres', type=int, default=DEFAULT_SPHERES)
    parser.add_argument('--repeats', type=int, default=REPEATS)
    args = parser.parse_args()

    outdir = os.path.dirname(args.out) or '.'
    os.makedirs(outdir, exist_ok=True)

    with open(args.out, 'w', newline='') as csvfile:
        csv.writer(csvfile).writerow(FIELDS)

    thread_list = [int(x) for x in args.threads.split(",")]
    # the sequential render is the reference for every resolution
    if 1 not in thread_list:
        thread_list.insert(0, 1)
    res_list = [x for x in args.res.split(",")]

    mismatches = 0
    for w_h in res_list:
        w, h = map(int, w_h.split("x"))
        reference = None

        for t in thread_list:
            times = []
            for r in range(args.repeats):
                out_file = os.path.join(outdir, f"out_{w}x{h}_t{t}_tile{args.tile}_r{r}.ppm")
                print(f"Running: {w}x{h}, threads={t}, repeat={r}")

                ms, cpu_avg, cpu_max = run_one(w, h, t, args.tile, args.spheres, out_file)

                if reference is None:
                    reference = out_file
                identical, max_diff, _ = compare(reference, out_file)
                if not identical:
                    mismatches += 1
                    print(f"Warning: {out_file} differs from {reference} (max diff {max_diff})")

                with open(args.out, 'a', newline='') as csvfile:
                    csv.writer(csvfile).writerow([
                        t, w, h, args.tile, args.spheres, r,
                        f"{ms:.3f}",
                        f"{cpu_avg:.2f}",
                        f"{cpu_max:.2f}",
                        int(identical),
                        out_file,
                    ])

                times.append(ms)
                time.sleep(0.5)

            median_time = statistics.median(times)
            print(f"Median time for {w}x{h}, t={t}: {median_time:.3f} ms")

    print(f"All done. Results in {args.out}")
    return 1 if mismatches else 0

if __name__ == '__main__':
    sys.exit(main())
