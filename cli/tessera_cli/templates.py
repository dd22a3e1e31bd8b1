"""Starter documents written by `tessera init`."""

from __future__ import annotations

from typing import Any


def starter_design(name: str) -> dict[str, Any]:
    """A minimal design: settings, tokens and one component."""
    return {
        "version": "1.0",
        "name": name,
        "settings": {
            "defaultUnits": "px",
            "rootFontSize": 16,
        },
        "tokens": {
            "colors": {
                "primary": "#3b82f6",
                "background": "#ffffff",
                "foreground": "#000000",
            },
            "spacing": {
                "sm": "8px",
                "md": "16px",
                "lg": "24px",
            },
        },
        "components": {
            "main": {
                "id": "main",
                "name": "Main Component",
                "width": 1024,
                "height": 768,
                "root": {
                    "id": "root",
                    "type": "box",
                    "layout": {
                        "display": "flex",
                        "flexDirection": "column",
                        "alignItems": "center",
                        "justifyContent": "center",
                    },
                    "width": "100%",
                    "height": "100%",
                    "style": {"backgroundColor": "#ffffff"},
                    "children": [
                        {
                            "id": "title",
                            "type": "text",
                            "text": {
                                "content": f"Welcome to {name}",
                                "fontSize": 32,
                                "fontWeight": "bold",
                                "color": "#000000",
                            },
                        },
                        {
                            "id": "subtitle",
                            "type": "text",
                            "text": {
                                "content": "Edit this file to see changes in real-time",
                                "fontSize": 16,
                                "color": "#666666",
                            },
                            "margin": [16, 0, 0, 0],
                        },
                    ],
                },
            },
        },
    }
