import sys
import logging
import argparse

from shelfmark import create_app

log = logging.getLogger('werkzeug')
log.disabled = True
cli = sys.modules['flask.cli']
cli.show_server_banner = lambda *x: None


def serve(args) -> None:
    app = create_app()
    print(f"Shelfmark starting on http://{args.host}:{args.port}", flush=True)
    app.run(host=args.host, port=args.port, debug=False, threaded=True)


def _print_state(state) -> None:
    if state.loading:
        return
    if state.error:
        print(f"! {state.error}", flush=True)
        return
    label = f" matching '{state.search}'" if state.search else ""
    print(
        f"-- page {state.page}/{max(state.total_pages, 1)}"
        f" ({state.total} bookmarks{label})",
        flush=True,
    )
    for item in state.items:
        stamp = f"{item.created_at:%Y-%m-%d %H:%M}"
        print(f"   {item.id}  {stamp}  {item.title}  <{item.url}>")


def _run_command(controller, line: str) -> None:
    command, _, rest = line.strip().partition(" ")
    if command == "add":
        url, _, title = rest.strip().partition(" ")
        result = controller.add_bookmark(url, title)
    elif command == "del":
        result = controller.delete_bookmark(rest.strip())
    elif command == "search":
        controller.set_search(rest)
        return
    elif command == "next":
        controller.next_page()
        return
    elif command == "prev":
        controller.previous_page()
        return
    else:
        if command:
            print("commands: add URL TITLE | del ID | search TERM | next | prev")
        return
    if not result.success:
        print(f"! {result.error}", flush=True)


def watch(args) -> None:
    from shelfmark.client import BookmarksClient, EventStreamListener
    from shelfmark.listing import ListingController

    logging.basicConfig(level=logging.WARNING)
    with BookmarksClient(args.server, token=args.token) as client:
        controller = ListingController(
            client,
            subscribe=lambda callback: EventStreamListener(client, callback).start(),
            page_size=args.limit,
            page=args.page,
            search=args.search,
        )
        controller.on_change(_print_state)
        with controller:
            try:
                for line in sys.stdin:
                    _run_command(controller, line)
            except KeyboardInterrupt:
                pass


def main() -> None:
    p = argparse.ArgumentParser(prog="shelfmark")
    sub = p.add_subparsers(dest="command")

    serve_p = sub.add_parser("serve", help="run the web service")
    serve_p.add_argument("--host", default="0.0.0.0")
    serve_p.add_argument("--port", type=int, default=8072)

    watch_p = sub.add_parser("watch", help="follow a live bookmark listing")
    watch_p.add_argument("--server", default="http://127.0.0.1:8072")
    watch_p.add_argument("--token", required=True)
    watch_p.add_argument("--search", default="")
    watch_p.add_argument("--page", type=int, default=1)
    watch_p.add_argument("--limit", type=int, default=10)

    args = p.parse_args()
    if args.command == "watch":
        watch(args)
    else:
        if args.command is None:
            args.host, args.port = "0.0.0.0", 8072
        serve(args)


if __name__ == "__main__":
    main()
