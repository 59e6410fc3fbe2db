import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv
from yt_dlp.cookies import extract_cookies_from_browser


ENV_KEYS = {
    "ytdlp": "YTDLP_COOKIES_FILE",
    "gallerydl": "GALLERYDL_COOKIES_FILE",
}


def update_env(key: str, cookies_path: str, env_path: Path = Path(".env")) -> None:
    lines = []
    if env_path.exists():
        lines = env_path.read_text(encoding="utf-8").splitlines()
    wrote = False
    for i, line in enumerate(lines):
        if line.startswith(f"{key}="):
            lines[i] = f"{key}={cookies_path}"
            wrote = True
            break
    if not wrote:
        lines.append(f"{key}={cookies_path}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    print(f"Updated {env_path} with {key}={cookies_path}")


def main() -> int:
    load_dotenv()

    p = argparse.ArgumentParser(description="Export browser cookies (Netscape format) for yt-dlp and gallery-dl")
    p.add_argument("--from-browser", dest="browser", required=True, help="Browser: chrome|chromium|firefox|safari|edge")
    p.add_argument("--profile", dest="profile", help="Browser profile name/index", default=None)
    p.add_argument("--out", dest="out", help="Path to save cookies.txt", default="cookies.txt")
    p.add_argument(
        "--set-env",
        dest="set_env",
        choices=sorted(ENV_KEYS) + ["all"],
        default=None,
        help="Record the cookies path in .env for this tool (or all)",
    )
    args = p.parse_args()

    try:
        jar = extract_cookies_from_browser(args.browser, profile=args.profile)
    except Exception as err:  # yt-dlp raises plain Exception subclasses per browser
        print(f"Could not read cookies from {args.browser}: {err}", file=sys.stderr)
        return 1
    out_path = Path(args.out).resolve()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    jar.save(str(out_path), ignore_discard=True, ignore_expires=True)
    print(f"Saved {len(jar)} cookies to {out_path}")

    if args.set_env:
        targets = ENV_KEYS.values() if args.set_env == "all" else [ENV_KEYS[args.set_env]]
        for key in targets:
            update_env(key, str(out_path))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
