"""A stand-in for exiftool speaking the same stdin/stdout protocol.

Stay-open mode (`-stay_open True -@ -`) reads arguments line by line and
answers on `-execute` with a `{ready}` line. Without it, the arguments come
from the command line and stdin. Recognised commands:

  -ver              print the version
  -echo TEXT        print TEXT
  -warn TEXT        print TEXT to stderr
  -fail TEXT        print "Error: TEXT" to stderr, nothing to stdout
  -latefail TEXT    print "Error: TEXT" to stderr 0.5s after the response
  -nothing          print nothing at all
  -sleep SECONDS    sleep before answering
  -XResolution      print "XResolution: 300"
  any FILE          ignored
"""
import sys
import time

VERSION = "12.76"
LATE_DELAY = 0.5


def run(args):
    out, err, late = [], [], []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "-ver":
            out.append(VERSION)
        elif arg == "-echo":
            i += 1
            out.append(args[i])
        elif arg == "-warn":
            i += 1
            err.append(args[i])
        elif arg == "-fail":
            i += 1
            err.append(f"Error: {args[i]}")
        elif arg == "-latefail":
            i += 1
            late.append(f"Error: {args[i]}")
        elif arg == "-sleep":
            i += 1
            time.sleep(float(args[i]))
        elif arg == "-XResolution":
            out.append("XResolution: 300")
        i += 1
    # stderr first so it is drained before the response completes
    for line in err:
        sys.stderr.write(line + "\n")
    sys.stderr.flush()
    for line in out:
        sys.stdout.write(line + "\n")
    return late


def stay_open():
    pending = []
    for raw in sys.stdin:
        line = raw.rstrip("\n")
        if line == "-execute":
            late = run(pending)
            pending = []
            sys.stdout.write("{ready}\n")
            sys.stdout.flush()
            if late:
                time.sleep(LATE_DELAY)
                for err_line in late:
                    sys.stderr.write(err_line + "\n")
                sys.stderr.flush()
        elif line == "-stay_open" and pending == []:
            pending.append(line)
        elif pending == ["-stay_open"] and line == "False":
            return
        else:
            pending.append(line)


def main():
    argv = sys.argv[1:]
    if argv[:2] == ["-stay_open", "True"]:
        stay_open()
        return
    stdin_args = [] if "-ver" in argv else [line.rstrip("\n") for line in sys.stdin]
    run(argv + stdin_args)
    sys.stdout.flush()


if __name__ == "__main__":
    main()
