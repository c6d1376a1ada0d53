import argparse
import sys
from pathlib import Path

import yaml

from salvage.salvage_config import configure
from salvage.salvage_datatypes import Option
from salvage.salvage_errors import ConfigError, TemplateError
from salvage.salvage_runtime import Template


def build_template(name: str, config_path: str = None, all_options: bool = False) -> Template:
    tmpl = Template(name)
    if all_options:
        tmpl.option(Option.ALL_OPTIONS)
    if config_path:
        configure(tmpl, Path(config_path))
    return tmpl


def load_data(path: str):
    if not path:
        return None
    return yaml.safe_load(Path(path).read_text(encoding="utf-8"))


def render_file(args) -> int:
    """Render a template file non-interactively and return the exit status."""
    p = Path(args.template)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {args.template}", file=sys.stderr)
        return 1
    try:
        tmpl = build_template(p.name, args.config, args.all_options)
        data = load_data(args.data)
        tmpl.parse(source)
    except (ConfigError, yaml.YAMLError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except TemplateError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    result = tmpl.run(data)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    sys.stdout.write(result.value)
    return 0


def repl(args):
    """Render each input line as a template against the loaded data."""
    print("salvage REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")
    tmpl = build_template("repl", args.config, args.all_options)
    data = load_data(args.data)
    while True:
        try:
            line = input(">> ")
        except EOFError:
            print()
            break
        if line.strip() == "exit":
            break
        if not line.strip():
            continue
        try:
            tmpl.parse(line)
        except TemplateError as exc:
            print(str(exc), file=sys.stderr)
            continue
        result = tmpl.run(data)
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            continue
        print(result.value)


def main(argv=None):
    parser = argparse.ArgumentParser(prog="salvage", description="Render templates with error managers.")
    parser.add_argument("template", nargs="?", help="template file to render (REPL when omitted)")
    parser.add_argument("-d", "--data", help="YAML or JSON data file")
    parser.add_argument("-c", "--config", help="error manager configuration file")
    parser.add_argument("-a", "--all-options", action="store_true", help="enable every extended option")
    args = parser.parse_args(argv)
    if args.template:
        raise SystemExit(render_file(args))
    repl(args)


if __name__ == "__main__":
    main()
