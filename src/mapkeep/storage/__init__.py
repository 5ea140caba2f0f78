"""Mindmap storage: one file per document, titles derived from content.

Layout:
    ~/Documents/WiseMapping/           # storage root (configurable)
    ├── 0b6c…-…-….wxml                 # <uuid>.wxml, native mindmap XML
    └── .0b6c….wxml.<hex>.tmp          # transient, only while a save is in flight

The storage root is the single source of truth; there is no separate index.
"""
