"""
Case similarity layer.

  - ``signature``  — pure signature construction (vector, bigrams, context)
  - ``ranker``     — pure similarity scoring and ranking
  - ``engine``     — DB-backed build / find / rebuild
"""
