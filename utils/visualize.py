from __future__ import annotations

from pipeline.graph import build_graph


def print_ascii(graph=None) -> None:
    """Print an ASCII diagram of the caption pipeline graph."""
    print((graph or build_graph()).get_graph().draw_ascii())


def save_mermaid_png(path: str = "graph.png", graph=None) -> None:
    """
    Render a diagram PNG via Mermaid's API.

    Requires internet connectivity as it uses mermaid.ink under the hood.
    """
    from langchain_core.runnables.graph import MermaidDrawMethod

    png = (graph or build_graph()).get_graph().draw_mermaid_png(
        draw_method=MermaidDrawMethod.API
    )
    with open(path, "wb") as f:
        f.write(png)
    print(f"Saved → {path}")


def print_mermaid_code(graph=None) -> None:
    """Print Mermaid code suitable for pasting into mermaid.live."""
    print((graph or build_graph()).get_graph().draw_mermaid())


if __name__ == "__main__":
    print_ascii()
    print_mermaid_code()
