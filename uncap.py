import asyncio
import importlib
import sys

from uncap.uncap_datatypes import Ref, Out
from uncap.uncap_dump import dump, enable_dump_bypass
from uncap.uncap_runtime import Uncapsulator, load_type, uncapsulate, uncapsulate_type, unwrap

USAGE = "usage: python uncap.py [module[:qualname]] [expression]"


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def load_target(spec: str) -> Uncapsulator:
    """Imports 'module' or 'module:qualname' and wraps it; classes get a static-member proxy."""
    if ":" in spec:
        target = load_type(spec)
    else:
        target = importlib.import_module(spec)
    if isinstance(target, type):
        return uncapsulate_type(target)
    return uncapsulate(target)


def make_namespace(target=None) -> dict:
    return {
        "target": target,
        "Ref": Ref,
        "Out": Out,
        "dump": dump,
        "unwrap": unwrap,
        "uncapsulate": uncapsulate,
        "uncapsulate_type": uncapsulate_type,
    }


def evaluate(source: str, namespace: dict):
    """Evaluates an expression, or executes a statement (assignments) and returns None."""
    try:
        code = compile(source, "<uncap>", "eval")
    except SyntaxError:
        exec(compile(source, "<uncap>", "exec"), namespace)
        return None
    return eval(code, namespace)


def show(result):
    if isinstance(result, Uncapsulator):
        print(dump(result))
    elif result is not None:
        print(repr(result))


async def run_expression(namespace: dict, source: str):
    """Evaluate one expression non-interactively and exit with appropriate status."""
    try:
        show(evaluate(source, namespace))
    except Exception as e:
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        raise SystemExit(1)


async def main():
    """Evaluate an expression when provided, otherwise start the interactive REPL."""
    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    enable_dump_bypass()

    target = None
    if args:
        try:
            target = load_target(args[0])
        except Exception as e:
            print(f"Error: cannot load '{args[0]}': {e}", file=sys.stderr)
            print(USAGE, file=sys.stderr)
            raise SystemExit(1)
    namespace = make_namespace(target)

    if len(args) > 1:
        await run_expression(namespace, " ".join(args[1:]))
        return

    print("uncap explorer v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    # REPL Loop
    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break

            show(evaluate(line, namespace))

        except EOFError:
            print("\nExiting.")
            break
        except Exception as e:
            print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
