"""FaceNote: remember the names and faces of people you rarely meet.

Layout on disk (``StoreConfig.data_dir``, default ``~/.facenote/data``):
    ├── VERSION
    ├── people/<id>.md              # Person record, YAML frontmatter + memo body
    ├── groupCounts/<group>.md      # Derived member count per group
    └── quizSettings/current.md     # Saved quiz mode and auto-promotion

Entry point for applications is ``facenote.core.FaceNote``.
"""
