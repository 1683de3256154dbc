from numba import njit


@njit(["void(float32[:], float32, float32[:])", "void(float64[:], float64, float64[:])"])
def axpy(y, a, x):
    for idx in range(x.shape[0]):
        y[idx] = a * x[idx] + y[idx]
