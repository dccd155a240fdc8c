# Trust Layer Services
#
# Everything that turns raw verifications into trust signals:
# - How closely a claim matches its source (SimilarityScorer)
# - Which domains can be trusted, ranked by citations (DomainTrustAggregator)
