"""Template knowledge layer.

Public surface:
    extract_intent / Intent     — intent.py: text → weighted keywords + category.
    Template / TemplateMatch    — templates.py: template value types.
    TemplateLibrary             — library.py: curated catalogue + EMA statistics.
    TemplateCache               — cache.py: memory → store → discovery cache.
    CommunityCatalogueClient    — catalogue.py: best-effort remote templates.

Import from the submodules directly; this package does not re-export them.
"""
