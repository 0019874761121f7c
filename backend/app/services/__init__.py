# Services package init
"""
DocDigest Backend: Services Layer
===================================

What:  Business logic between the routes (HTTP) and the database.

Service Inventory:
    - TextExtractor: PDF/DOCX/TXT/RTF/ODT → text + page count
    - UsageLedger: per-user monthly counters with atomic increment
    - EntitlementGate: plan + usage → approve (with effective tier) or deny
    - Summarizer (abstract) / GeminiSummarizer: sectioned document summaries
    - FileService: upload validation and temporary storage
    - SummaryService / SubscriptionService: persistence reads and writes
    - ProcessingOrchestrator: store → extract → gate → summarize → persist → increment

Routes stay thin; every rule about quotas and tiers lives here.
"""
