#!/usr/bin/env python3
"""
Managed Cluster Operator - Entry Point

Polls the cluster registry (Rancher) and keeps VerrazzanoManagedCluster
resources and their kubeconfig secrets in step with the clusters it reports.

Usage:
    python run.py --registry-url URL --registry-username USER --registry-password PASS
                  [--registry-host HOST] [--in-cluster] [--prune-removed-clusters] [--verbose]
"""

import sys

# Add the repository root to path
sys.path.insert(0, ".")

from cluster_operator.main import main


if __name__ == "__main__":
    main()
